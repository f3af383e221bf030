"""
stagehand - Stage artifacts to an object store and run them on a cluster.

Local files are uploaded once per distinct content to a staging location,
then a payload is executed in an ephemeral pod whose termination message
carries the result location.
"""

__version__ = "0.1.0"


__all__ = ["StagehandConfig", "load_config", "get_stagehand_home"]

from .config import StagehandConfig, load_config, get_stagehand_home
