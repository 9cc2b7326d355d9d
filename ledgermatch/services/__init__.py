"""Services package: matching, recurring detection and their persistence."""
