# Job execution: runner, executors, remote agent bridge, alerts
