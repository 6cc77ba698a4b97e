"""S3 object-storage gateway: direct uploads, listings and signed URLs."""
