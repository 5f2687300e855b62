"""Utility modules for the research job engine."""

from erjobs.utils.json_extract import extract_json_object, get_str_list, get_value

__all__ = ["extract_json_object", "get_str_list", "get_value"]
