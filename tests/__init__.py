"""
LoopChannel Test Suite

Test Categories:
- unit/: Fast, isolated unit tests (plans, scanning, config, commands)
- streaming/: Supervisor, watcher and feeder tests that spawn real
  (python) subprocesses in place of ffmpeg
"""
