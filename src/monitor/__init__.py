"""Security monitor — event log, alerts and read-side aggregation.

Modules
───────
  monitor     — SecurityMonitor: ingest, count, alert, query
  aggregation — pure functions over event lists (buckets, histograms, trends)
  reporter    — write CSV / TXT outputs
"""
