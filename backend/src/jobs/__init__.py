"""Matching job orchestration.

Jobs are queued through the service, admitted by admission control and
executed chunk by chunk by the JobOrchestrator, either from the Celery
consumer (workers.matching_worker) or synchronously through drain().
"""
