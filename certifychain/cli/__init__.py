"""certifychain command-line interface."""
