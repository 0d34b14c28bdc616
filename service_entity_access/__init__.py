"""Entity access service for the 254Carbon Access Layer."""
