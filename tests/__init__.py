"""vdcctl test suite."""
