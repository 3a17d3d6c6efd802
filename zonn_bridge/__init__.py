"""zonn_bridge - automation bridge between the Zonn focus timer and a media player."""

__version__ = "0.1.0"
