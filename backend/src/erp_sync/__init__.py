"""Inbound ERP sync: stock levels, order statuses and the product catalog.

Every run is recorded as a SyncLog row. At most one run per sync type is
RUNNING at a time; operators can cancel a run, which stops it at the next
page boundary.
"""
