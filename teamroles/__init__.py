"""
Team role assignment backend: oracle-scored compatibility, optimal matching,
background explanations. The HTTP entry point is teamroles.api:app.
"""
