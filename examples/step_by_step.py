#!/usr/bin/env python3
"""
Drive each lifecycle manager by hand instead of using the Orchestrator.
Several waiters on the same task share one remote wait.
"""

import anyio

import quayside as qy
from quayside.core.images import host_platform


NAMESPACE = "examples"
CONTAINER_ID = "step-by-step"


async def main():
	config = qy.Config.load(namespace=NAMESPACE)
	images = qy.ImagePuller(config.snapshotter)
	containers = qy.ContainerManager()
	tasks = qy.TaskManager(config.scratch_dir)

	async with await qy.connect(config=config) as handle:
		ref = await images.pull(handle, NAMESPACE, "alpine", host_platform())
		print(f"[OK] pulled {ref}")

		spec = qy.ContainerSpec(id=CONTAINER_ID, image=str(ref), args=["/bin/sh", "-c", "sleep 1; echo done"])
		await containers.create(handle, NAMESPACE, spec)
		try:
			stdio = await tasks.allocate_stdio(NAMESPACE, CONTAINER_ID)
			task = await tasks.create(handle, NAMESPACE, CONTAINER_ID, stdio, owns_stdio=True)
			await tasks.start(handle, NAMESPACE, CONTAINER_ID)
			print(f"[OK] started pid {task.pid}")

			statuses = []

			async def waiter(n):
				statuses.append((n, await tasks.wait(handle, NAMESPACE, CONTAINER_ID, timeout=30)))

			async with anyio.create_task_group() as tg:
				for n in range(3):
					tg.start_soon(waiter, n)
			print("waiters:", sorted(statuses))

			out, _ = await tasks.read_output(task)
			print("output:", out.strip())
			await tasks.delete(handle, NAMESPACE, CONTAINER_ID)
		finally:
			await qy.Orchestrator(handle, config).cleanup(handle, NAMESPACE, CONTAINER_ID)
		print("[OK] cleaned up")


if __name__ == "__main__":
	anyio.run(main)
