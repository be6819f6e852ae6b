#!/usr/bin/env python3
"""Backup runner for cron"""
from pgbackup.cli import main

if __name__ == '__main__':
    main()
