"""Service layer: business operations over the async session."""
