"""External collaborators: vision extractor and file storage."""
