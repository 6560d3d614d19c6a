"""Celery application and beat schedule"""
