"""Pydantic schemas for stored records and bridge API payloads."""
