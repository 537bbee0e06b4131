"""
Skyline Sonar - hear the buildings around you.

Tracks the user's position and heading, selects the nearby buildings from a
footprint dataset, and turns their heights and usages into a timed sequence
of tones.
"""

from .main import PipelineConfig, PipelineCoordinator, run_pipeline
from .models import FilteredBuilding, FilterPolicy, Pose, SonificationEvent
from .pose_tracker import PoseTracker
from .sonification import SonificationScheduler, build_events, classify_timbre
from .spatial_filter import SpatialFilter

__all__ = [
    'PipelineConfig',
    'PipelineCoordinator',
    'run_pipeline',
    'FilteredBuilding',
    'FilterPolicy',
    'Pose',
    'SonificationEvent',
    'PoseTracker',
    'SonificationScheduler',
    'build_events',
    'classify_timbre',
    'SpatialFilter',
]
