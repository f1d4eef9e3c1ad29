"""Services package: storage, cloud sync, rates, notes and staff lists."""
