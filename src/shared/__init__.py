"""Shared, implementation-agnostic types for the plugin boundary.

Submodules:
    error_codes: Error Codes der Plugin-Bridge
    exceptions: Bridge Exception Hierarchy
    ffi_wrapper: Entry-Point-Aufrufe und Fatal-Boundary
    arrow_schemas: Arrow-Schemas für die dtype-Verträge der Exchange-Buffer
"""
