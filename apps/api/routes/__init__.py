"""HTTP routers for the Bugdesk API."""
