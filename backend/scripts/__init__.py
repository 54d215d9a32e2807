"""
Backend Scripts Module

Available scripts:
    - seed_data.py: Creates sample members and workflow definitions
    - validate_workflow.py: Parses a definition file and prints its steps and routing

Usage:
    python -m scripts.seed_data
    python -m scripts.validate_workflow workflow.xml
"""
