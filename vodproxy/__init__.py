"""vodproxy — safety-checked HTTP forwarding proxy with video-site API aggregation."""

__version__ = "1.0.0"
