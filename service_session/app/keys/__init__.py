"""
Key material, configuration snapshots, persistence and rotation.
"""
