from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

# Keep metrics module-level singletons
endpoint_requests_total = Counter(
    "endpoint_requests_total", "Requests handled by the trigger endpoint", ["method", "action", "status"]
)
request_latency_seconds = Histogram("request_latency_seconds", "HTTP request latency seconds")

# Execution metrics
job_executions_total = Counter("job_executions_total", "Job executions by outcome", ["outcome"])
execution_latency_seconds = Histogram("execution_latency_seconds", "Job execution latency seconds")

http_source_deliveries_total = Counter(
    "http_source_deliveries_total", "Inbound webhook deliveries routed to a source", ["kind"]
)


def metrics_response():
    # Return prometheus metrics as a Response
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
