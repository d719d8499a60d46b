"""Local order lifecycle: status machine, inventory counters and payment hooks."""
