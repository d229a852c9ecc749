"""HTTP clients for the requirements server (OSLC) and the model server (MMS)."""

from .mms_client import MmsClient, baseline_ref_id
from .oslc_client import OslcClient

__all__ = ["MmsClient", "OslcClient", "baseline_ref_id"]
