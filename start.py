#!/usr/bin/env python3
import os
import subprocess
import sys

# Ensure stdout is unbuffered for container logs
os.environ['PYTHONUNBUFFERED'] = '1'

port = os.getenv('PORT', '8000')
role = os.getenv('ENGINE_ROLE', 'api')

print(f"[start.py] Starting {role}...", flush=True)
print(f"[start.py] PORT={port}", flush=True)
print(f"[start.py] DATABASE_URL={'set' if os.getenv('DATABASE_URL') else 'NOT SET'}", flush=True)
print(f"[start.py] PIPELINE_API_KEY={'set' if os.getenv('PIPELINE_API_KEY') else 'NOT SET'}", flush=True)

if role == 'worker':
    cmd = [sys.executable, 'scripts/run_worker.py']
else:
    cmd = [
        'uvicorn',
        'app.main:app',
        '--host', '0.0.0.0',
        '--port', port,
    ]

print(f"[start.py] Running: {' '.join(cmd)}", flush=True)
sys.exit(subprocess.call(cmd))
