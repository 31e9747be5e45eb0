"""hris-jobs command line interface."""
