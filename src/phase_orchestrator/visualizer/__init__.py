"""Visualizer package - Rich terminal views for task observability."""

from .events import render_events, render_status_counts
from .task_progress import (
	render_artifact_list,
	render_dispatch_timeline,
	render_task_list,
	render_task_progress,
	render_task_summary,
)

__all__ = [
	"render_artifact_list",
	"render_dispatch_timeline",
	"render_events",
	"render_status_counts",
	"render_task_list",
	"render_task_progress",
	"render_task_summary",
]
