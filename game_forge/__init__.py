"""Conversational generator for phone-sensor controlled browser games."""
