"""REST API for the ride payment lifecycle and capture worker."""
