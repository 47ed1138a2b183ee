"""Example flake: one package from the base set, one added by an overlay."""

from pixflake import lazy

description = "hello, with a greeting overlay"

inputs = {
    "nixpkgs": "path:../nixpkgs",
}

pkgs_config = {"allowUnfree": False}


def greeting(final, prev):
    return {"greeting": f"{prev.hello} says hi on {final.system}"}


overlays = {"greeting": greeting}

pkgs_overlays = [greeting]

templates = {
    "default": {"path": "./template", "description": "a minimal flake"},
}


def outputs(ctx):
    pkgs = ctx.pkgs
    return {
        "packages": {
            "hello": str(pkgs.hello),
            "greeting": pkgs.greeting,
        },
        "default": lazy(lambda: ctx.self.packages["hello"]),
        "about": f"{ctx.self.description} ({ctx.system})",
    }
