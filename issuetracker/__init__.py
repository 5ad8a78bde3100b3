"""Issue tracker API over a partitioned document store."""
