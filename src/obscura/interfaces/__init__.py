"""HTTP interface (requires the api extra)"""
