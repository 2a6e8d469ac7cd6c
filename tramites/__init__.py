"""Trámites backend — consecutivo allocation and case workflow."""
