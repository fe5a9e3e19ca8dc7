"""Pure domain logic: values, costing, stock classification, events, DTOs.  No I/O."""
