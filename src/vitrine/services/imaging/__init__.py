"""Image processing: preprocessing, export renditions and template composition."""
