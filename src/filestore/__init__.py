"""Pluggable file storage: local disk, S3-compatible stores and Cloudinary."""
