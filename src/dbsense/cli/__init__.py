"""DBSense command line interface."""
