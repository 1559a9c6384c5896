"""Compile declarative firewalld rules into zone, ipset, service and rich-rule resources."""
