"""Pipexpand command line interface."""
