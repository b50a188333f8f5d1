"""
Meal Processing Pipeline

1. Submission - validate, compress, analyze, store, zone
2. Recovery   - background re-zoning of incomplete foods (in-process or Celery)
"""
