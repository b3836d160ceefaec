from invoke import task


@task
def lint(c):
    c.run("ruff check .")


@task
def format_check(c):
    c.run("ruff format --check .")


@task
def test(c):
    c.run("pytest")


@task
def serve(c, config="arena.example.yaml"):
    c.run(f"arena serve --config {config}")


@task
def ci(c):
    lint(c)
    format_check(c)
    test(c)
