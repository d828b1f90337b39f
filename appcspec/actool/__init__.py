"""Image subcommands: build, validate, cat-manifest and patch-manifest."""