"""Terminal adapter, views and frame rendering."""
