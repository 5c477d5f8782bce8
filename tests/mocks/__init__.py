"""Test doubles for the control plane."""
