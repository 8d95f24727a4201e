import anyio

import quayside as qy


async def main():
	config = qy.Config.load()
	spec = qy.ContainerSpec(id="my-alpine-container", image="docker.io/library/alpine:latest", args=["/bin/sh", "-c", "echo 'Hello'"])
	async with qy.Orchestrator(config=config) as orch:
		result = await orch.run(spec.image, spec)
	print(result.stdout, end="")
	print("exit status:", result.exit_status)
	result.raise_for_status()


if __name__ == "__main__":
	anyio.run(main)
