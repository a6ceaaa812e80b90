"""
Contribot API - HTTP triggers for the pipeline.

Provides a FastAPI backend so schedulers (cron, workflow runners) can start
discovery, full scrape runs, and annotation batches over HTTP.
"""
