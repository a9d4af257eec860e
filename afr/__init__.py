"""Agent Fleet Reconciler (AFR).

Controller core for a per-node monitoring agent fleet:
 - keeps the agent DaemonSet in line with the AgentFleet resource
 - asks the version authority which agent version is recommended
 - retires pods running an outdated agent, one node at a time,
   waiting for each replacement to become ready

Cluster access, credentials and the version authority are thin adapters
around the core so they can be swapped out in tests.
"""
