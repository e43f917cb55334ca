"""Celery 任务：对账重试与过期支付清理"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
