"""Services package for video processing, caching, quotas, notifications, and scheduling."""
